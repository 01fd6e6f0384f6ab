"""Trigger routing.

Turns external occurrences (webhook deliveries, cron ticks) into calls against
the local workflow-start handler:
- connector resolution (path -> channel name)
- a registry of forwarding functions and cron jobs, fixed at boot
- the HTTP forwarder and its failure classification
- cron trigger sources and the scheduler thread that fires them
"""

__all__: list[str] = []
