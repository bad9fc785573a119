"""
Job Queue — in-process deferred work with exponential-backoff retry.

One JobQueue owns its job store, ready heap and single worker task;
see job_queue.job_queue for the scheduling guarantees.
"""
from job_queue.job_queue import JobQueue, Processor, ProcessorMap, compute_backoff

__all__ = ["JobQueue", "Processor", "ProcessorMap", "compute_backoff"]
