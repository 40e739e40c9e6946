"""Survey questions, answers and the question bank."""
