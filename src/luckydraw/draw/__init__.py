"""Plan cycle, order and winner logic."""
