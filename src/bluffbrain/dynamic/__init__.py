"""Signal sources: Q-learning policy, opponent patterns, difficulty, chat."""
