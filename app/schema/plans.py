"""Request and response shapes for workout and meal plan generation."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
  """Base model that speaks camelCase on the wire."""

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

  def to_wire(self) -> dict[str, Any]:
    return self.model_dump(by_alias=True, mode="json", exclude_none=True)


FocusArea = Literal["fullBody", "upperBody", "lowerBody", "core", "arms", "back", "chest", "shoulders", "legs"]


class WorkoutFormData(CamelModel):
  """Form inputs for a workout plan request."""

  fitness_goal: Literal["muscleGain", "fatLoss", "strength", "endurance"]
  experience_level: Literal["beginner", "intermediate", "advanced"]
  days_per_week: int = Field(ge=1, le=7)
  session_length: int = Field(default=60, ge=10, le=240)
  focus_areas: list[FocusArea] = Field(default_factory=lambda: ["fullBody"], min_length=1)
  equipment: Literal["fullGym", "homeBasic", "bodyweight"] = "fullGym"


class MealFormData(CamelModel):
  """Form inputs for a meal plan request."""

  nutrition_goal: Literal["muscleGain", "fatLoss", "maintenance", "performance", "healthyEating"]
  daily_calories: int = Field(ge=800, le=8000)
  diet_type: Literal["balanced", "highProtein", "lowCarb", "keto", "mediterranean", "paleo", "vegetarian", "vegan"]
  meals_per_day: int = Field(default=3, ge=1, le=8)
  dietary_restrictions: Literal["none", "vegetarian", "vegan", "glutenFree", "dairyFree", "pescatarian"] = "none"
  cuisine_preference: Literal["any", "indonesian", "asian", "mediterranean", "western", "mexican", "indian"] | None = None
  meal_complexity: Literal["simple", "moderate", "complex"] | None = None
  include_desserts: bool | None = None
  allergies: Literal["none", "nuts", "shellfish", "eggs", "soy", "wheat", "dairy"] | None = None
  budget_level: Literal["low", "medium", "high"] | None = None
  cooking_time: Literal["minimal", "moderate", "extended"] | None = None
  seasonal_preference: Literal["any", "spring", "summer", "fall", "winter"] | None = None
  health_conditions: Literal["none", "diabetes", "heartHealth", "lowSodium", "lowFodmap"] | None = None
  protein_preference: Literal["balanced", "poultry", "seafood", "redMeat", "plantBased"] | None = None
  meal_prep_option: Literal["daily", "batchCook", "weeklyPrep"] | None = None
  include_snacks: bool | None = None
  snack_frequency: Literal["once", "twice", "thrice"] | None = None
  snack_type: Literal["balanced", "protein", "lowCalorie", "sweet", "savory", "fruit"] | None = None


class WorkoutSummary(CamelModel):
  goal: str
  level: str
  days_per_week: int
  session_length: int
  focus_areas: list[str]
  equipment: str


class Exercise(CamelModel):
  name: str
  sets: int
  reps: str
  rest: str


class WorkoutDay(CamelModel):
  focus: str
  description: str
  exercises: list[Exercise]
  notes: list[str]


class WorkoutPlan(CamelModel):
  """Validated workout plan returned by the model."""

  summary: WorkoutSummary
  overview: str
  workouts: dict[str, WorkoutDay]


class MealSummary(CamelModel):
  goal: str
  calories: float
  diet_type: str
  meals_per_day: int
  restrictions: str
  cuisine: str | None = None
  complexity: str | None = None
  include_desserts: bool | None = None
  allergies: str | None = None
  budget: str | None = None
  cooking_time: str | None = None
  seasonal_preference: str | None = None
  health_conditions: str | None = None
  protein_preference: str | None = None
  meal_prep_option: str | None = None
  include_snacks: bool | None = None
  snack_frequency: str | None = None
  snack_type: str | None = None


class Macros(CamelModel):
  protein: float
  carbs: float
  fat: float


class MealTotals(Macros):
  calories: float


class Food(MealTotals):
  name: str
  amount: str


class Meal(CamelModel):
  name: str
  foods: list[Food]
  totals: MealTotals
  notes: str | None = None
  cooking_time: str | None = None
  is_snack: bool | None = None


class MealPlan(CamelModel):
  """Validated seven-day meal plan returned by the model."""

  summary: MealSummary
  overview: str
  macros: Macros
  meals: dict[str, list[Meal]]
