"""Serial task orchestration for forwarded links.

One worker thread drains a bounded FIFO, so at most one runner process exists
at a time. Submissions and cancellations arrive on handler threads and only touch
the registry's in-memory tables; process teardown happens outside the registry lock.
A batch of links shares one display message whose rows resolve independently, and
the batch's cancel control is retired once every row reaches a terminal line.
"""
