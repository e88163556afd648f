"""
Health check endpoints.

Provides /healthz and /readyz endpoints for monitoring.
"""
import logging
from django.http import JsonResponse
from django.views import View
from django.db import DatabaseError, connection
from django.db.migrations.executor import MigrationExecutor
from django.conf import settings

logger = logging.getLogger(__name__)


class HealthzView(View):
    """
    Basic health check endpoint.

    Returns 200 OK if application is running.
    Does not check dependencies.
    """

    def get(self, request):
        """Return basic health status."""
        health_data = {
            'status': 'ok',
            'version': getattr(settings, 'VERSION', 'unknown'),
        }

        # Add commit hash if available (set by deployment)
        commit_hash = getattr(settings, 'COMMIT_HASH', None)
        if commit_hash:
            health_data['commit'] = commit_hash

        return JsonResponse(health_data, status=200)


class ReadyzView(View):
    """
    Readiness check endpoint.

    Returns 200 OK once the database answers and every migration is
    applied, so sync batches can be written.
    """

    def get(self, request):
        """Return readiness status with dependency checks."""
        database_ok = self._check_database()
        checks = {
            'database': database_ok,
            'migrations': database_ok and self._check_migrations(),
        }

        all_healthy = all(checks.values())

        response_data = {
            'status': 'ready' if all_healthy else 'not_ready',
            'checks': checks,
        }

        status_code = 200 if all_healthy else 503

        return JsonResponse(response_data, status=status_code)

    def _check_database(self):
        """Check database connection."""
        try:
            with connection.cursor() as cursor:
                cursor.execute('SELECT 1')
                return True
        except DatabaseError as e:
            logger.error(
                'Database health check failed',
                extra={
                    'event': 'health_check_failed',
                    'check': 'database',
                    'error': str(e)
                }
            )
            return False

    def _check_migrations(self):
        """Check that no migration is pending."""
        executor = MigrationExecutor(connection)
        targets = executor.loader.graph.leaf_nodes()
        pending = executor.migration_plan(targets)
        if pending:
            logger.warning(
                'Pending migrations detected',
                extra={
                    'event': 'health_check_failed',
                    'check': 'migrations',
                    'pending_count': len(pending)
                }
            )
        return not pending
