"""HTTP API for the AnyClaw bridge."""
