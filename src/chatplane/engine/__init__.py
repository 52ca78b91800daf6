"""Transport-agnostic dispatch engine.

Adapters submit raw chat text to :class:`chatplane.engine.core.Engine`.
The text waits in a bounded :class:`~chatplane.engine.queue.JobQueue`
until one of a fixed number of worker threads picks it up. The worker
resolves it with the prefix router, runs the handler (built-in or
backend-bound) and hands exactly one result to the sink supplied at
submission time.

Why threads and not asyncio?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Every unit of work is one blocking call: an HTTP request to an LLM API or
a local CLI tool run as a subprocess. Parallelism comes only from running
several such calls side by side, so a small pool of synchronous workers
over a condition-variable queue covers it.
"""
