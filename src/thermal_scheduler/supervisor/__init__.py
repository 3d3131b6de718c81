"""Thermal supervision for delegated background tasks.

Three pieces share one SQLite log:

- ``ThermalPredictor`` answers "should this task start now?" before it runs.
- ``AbortSupervisor`` watches running tasks and stops them before the device
  overheats or runs out of battery, after an emergency checkpoint.
- ``CheckpointStore`` keeps the progress snapshots a suspended task resumes
  from.

``DecisionCoordinator`` combines the thermal forecast with the policy,
energy and queue checks into one logged scheduling verdict.

Why threads and not asyncio?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Sensors, suspend callbacks and the OS sleep trigger are plain blocking calls
owned by the host. A daemon ticker per monitored task keeps each task's
checks independent without forcing an event loop onto every caller.
"""
