"""
Business logic services.

Import services from their modules (``app.services.sync_service`` etc.);
provider adapters depend on ``timezone_service``, so this package does not
import the orchestration modules eagerly.
"""
