"""Schema package exports."""

from .plans import MealFormData, MealPlan, WorkoutFormData, WorkoutPlan

__all__ = ["MealFormData", "MealPlan", "WorkoutFormData", "WorkoutPlan"]
