"""Chat bot with a Claude tool-calling agent and append-only conversation history."""
