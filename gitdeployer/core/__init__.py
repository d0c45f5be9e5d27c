"""Deploy core: inventory, batching, hydration, state machine and orchestrator."""
