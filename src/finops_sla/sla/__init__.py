"""
SLA Monitoring Module
=====================

Bounded context for deadline monitoring of scheduled operational tasks.

Responsibilities:
- Derive each task's lifecycle status from its schedule and the clock
- Record notifications once per (task, event kind, episode)
- Hold escalated tasks until a justification is submitted
- Run the periodic evaluation loop and on-demand sync
- Serve notification listings and dashboard counts
"""

__version__ = "1.0.0"
