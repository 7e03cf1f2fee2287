"""Study-schedule allocation engine: weekly slot grid, planners, progress and undo history."""
