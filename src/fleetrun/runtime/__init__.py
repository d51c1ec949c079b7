"""Runtime layer: cancellation, retry, circuit breaking and logging."""
