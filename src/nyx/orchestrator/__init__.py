"""Task-graph scheduler for planner-produced coding tasks.

Why not Prefect / Celery for the dispatch loop?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
A run is one short-lived, in-process graph of a few dozen tasks produced by a
planner from a single objective.  What matters here is not queue durability
but the contract between the scheduler and its collaborators:

- Dependency readiness computed from committed graph state, with a Kahn
  validation pass that rejects cyclic plans before anything executes.
- A bounded retry policy that tolerates per-task failures while treating an
  executor crash as fatal for the whole run.
- Marker-file resource locks shared by any number of executors, in or out of
  process, so that two tasks writing the same file serialize.
- A synchronous, ordered event stream that lets a console (or a test) rebuild
  the exact task status table.

The plan -> ready -> dispatch -> retry loop in ``scheduler.py`` covers this
scope without a broker or a workflow server.
"""
