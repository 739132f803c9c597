"""Orchestration control loop for an external coding agent.

Why not a scheduler or a job queue?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
There is exactly one unit of work in flight per project: one agent process
deciding what to do, then one agent process doing it. What needs care is
not dispatch but the boundary with the agent:

- a pid lock so repeated local invocations never overlap;
- an assignment file contract that is validated mechanically, with the
  validation error handed back to the agent on the next attempt;
- a time budget split between "decide" and "do" so the first can never
  starve the second;
- a circuit breaker so a broken agent is not hammered in a tight loop.

``loop.SupervisorLoop`` drives ``iteration.IterationController``, which runs
``orchestration.OrchestrationPhase`` and then ``execution.ExecutionPhase``
through the ``backend.AgentInvoker`` protocol.
"""
