__all__ = ["PipelineState", "QuickOrderOutcome", "QuickOrderPipeline"]

from quicky.engine.quick_order import PipelineState, QuickOrderOutcome, QuickOrderPipeline
