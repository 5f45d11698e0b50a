"""
Application startup functions.
"""


def initialize_retention_scheduler(app):
    """Start the background retention sweeper if enabled."""
    services = app.extensions['walkie']

    if not app.config.get('ENABLE_RETENTION_SWEEPER'):
        app.logger.info("Retention sweeper not started (ENABLE_RETENTION_SWEEPER=false)")
        return None

    from walkie.services.retention import RetentionScheduler

    scheduler = RetentionScheduler(
        app,
        services.sweeper,
        interval_seconds=app.config['RETENTION_INTERVAL_SECONDS'],
    )
    scheduler.start()
    services.scheduler = scheduler
    return scheduler


def run_startup_tasks(app):
    """Run all startup tasks that need to happen after app creation."""
    with app.app_context():
        app.logger.info(
            f"Max upload size {app.config['MAX_UPLOAD_BYTES'] / 1024 / 1024:.1f}MB, "
            f"message retention {app.config['MESSAGE_RETENTION_DAYS']} days, "
            f"grace {app.config['RETENTION_GRACE_SECONDS']}s"
        )
    initialize_retention_scheduler(app)
