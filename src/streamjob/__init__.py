"""
streamjob: multi-step map/reduce jobs for Hadoop streaming and Dataproc.

One job script acts as the orchestrator that submits every step, and,
when re-invoked by the cluster with ``--stage``, as the mapper, combiner
or reducer for a single step.
"""

__version__ = "1.1.0"
