"""
Requisition Workflow Platform
Blueprint registry.
"""


def register_blueprints(app):
    """Attach every API blueprint to ``app``."""
    from reqflow.blueprints.health_bp import health_bp
    from reqflow.blueprints.notification_bp import notification_bp
    from reqflow.blueprints.requisition_bp import requisition_bp

    for bp in (health_bp, requisition_bp, notification_bp):
        app.register_blueprint(bp)
