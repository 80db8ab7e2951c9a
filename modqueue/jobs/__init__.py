"""Jobs — batch scanning and the trigger/inspect interface for maintenance runs."""
