"""Infrastructure layer: protocol seam, storage, consumer client, jobs, observability."""
