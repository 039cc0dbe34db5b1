from leadgrid.features.pipeline.repository.pipeline_repository import PipelineRepository

__all__ = ["PipelineRepository"]
