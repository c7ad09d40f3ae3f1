"""
admissions_batch -- Scheduled sweeps for SLA-timeout and automatic transitions.

The ``TriggerScheduler`` polls for applications whose stage SLA has expired
or whose automatic transitions may have become eligible, and applies them
through the transition engine.  Pure eligibility logic lives in
``admissions_batch.domain``.  ``AdmissionsOrchestrator`` wires the engine,
event handler and scheduler from ``EngineSettings``.
"""
