"""Pipeline consumers (rating, enrichment, CRM sync) and operator operations."""

from leadgrid.features.pipeline.services.crm_sync_service import CrmSyncService
from leadgrid.features.pipeline.services.enrichment_service import EnrichmentService
from leadgrid.features.pipeline.services.pipeline_admin_service import PipelineAdminService
from leadgrid.features.pipeline.services.rating_service import RatingService

__all__ = ["CrmSyncService", "EnrichmentService", "PipelineAdminService", "RatingService"]
