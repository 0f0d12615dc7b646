"""
Construction Schedule Service
Blueprint registry.

    health_bp    — /api/v1/health
    schedule_bp  — /api/v1 (projects, schedule rows, alerts)
"""
