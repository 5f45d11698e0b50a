"""
Service layer for the delivery core.

The app factory builds one instance of each service and stores them in
`app.extensions['walkie']`; request handlers fetch them from there.
"""

from dataclasses import dataclass

from flask import current_app


@dataclass
class ServiceRegistry:
    blob_store: object
    messages: object
    receipts: object
    delivery: object
    sweeper: object
    scheduler: object = None


def get_services() -> ServiceRegistry:
    return current_app.extensions['walkie']
