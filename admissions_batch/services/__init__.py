from admissions_batch.services.trigger_scheduler import TriggerScheduler

__all__ = ["TriggerScheduler"]
