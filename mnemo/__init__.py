"""mnemo: long-term memory core for a conversational agent."""
