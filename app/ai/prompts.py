"""Prompt builders for workout and meal plan generation."""

from __future__ import annotations

import json
from dataclasses import dataclass

from app.schema.plans import MealFormData, WorkoutFormData

_GOALS = {"muscleGain": "Muscle Gain", "fatLoss": "Fat Loss", "strength": "Strength", "endurance": "Endurance", "maintenance": "Maintenance", "performance": "Performance", "healthyEating": "Healthy Eating"}
_LEVELS = {"beginner": "Beginner", "intermediate": "Intermediate", "advanced": "Advanced"}
_FOCUS_AREAS = {"fullBody": "Full Body", "upperBody": "Upper Body", "lowerBody": "Lower Body", "core": "Core", "arms": "Arms", "back": "Back", "chest": "Chest", "shoulders": "Shoulders", "legs": "Legs"}
_EQUIPMENT = {"fullGym": "Full Gym", "homeBasic": "Home Basic (Dumbbells, Resistance Bands)", "bodyweight": "Bodyweight Only"}
_DIET_TYPES = {"balanced": "Balanced", "highProtein": "High Protein", "lowCarb": "Low Carb", "keto": "Keto", "mediterranean": "Mediterranean", "paleo": "Paleo", "vegetarian": "Vegetarian", "vegan": "Vegan"}
_RESTRICTIONS = {"none": "None", "vegetarian": "Vegetarian", "vegan": "Vegan", "glutenFree": "Gluten Free", "dairyFree": "Dairy Free", "pescatarian": "Pescatarian"}
_CUISINES = {"any": "Any / No Preference", "indonesian": "Indonesian", "asian": "Asian", "mediterranean": "Mediterranean", "western": "Western", "mexican": "Mexican", "indian": "Indian"}

# Protein / carbs / fat percentages of daily calories.
_MACRO_SPLITS: dict[str, tuple[int, int, int]] = {
  "highProtein": (40, 30, 30),
  "lowCarb": (35, 15, 50),
  "keto": (20, 5, 75),
  "mediterranean": (15, 55, 30),
  "paleo": (30, 25, 45),
}
_DEFAULT_SPLIT = (25, 50, 25)

WORKOUT_SYSTEM_PROMPT = "You are a professional fitness trainer. Generate a complete {days}-day workout plan in JSON format. CRITICAL: You MUST include exactly {days} days ({day_keys}). Never return fewer days than requested. Each day must have complete exercises with sets, reps, and rest times."

MEAL_SYSTEM_PROMPT = "You are a professional nutritionist with expertise in global cuisines. Generate detailed meal plans in JSON format that strictly follow the requested structure. CRITICAL: Each of the 7 days MUST have completely different meals. Do not include any explanations or comments in your response, only the JSON object."


@dataclass(frozen=True)
class PlanPrompt:
  """System and user prompt pair for one generation."""

  system: str
  user: str


@dataclass(frozen=True)
class MacroTargets:
  protein_percent: int
  carbs_percent: int
  fat_percent: int
  protein_grams: int
  carbs_grams: int
  fat_grams: int
  calories_per_meal: int


def workout_day_keys(days_per_week: int) -> list[str]:
  return [f"day{index + 1}" for index in range(days_per_week)]


def macro_targets(form: MealFormData) -> MacroTargets:
  """Split daily calories into gram targets using the diet type's macro ratio."""
  protein, carbs, fat = _MACRO_SPLITS.get(form.diet_type, _DEFAULT_SPLIT)
  calories = form.daily_calories
  return MacroTargets(
    protein_percent=protein,
    carbs_percent=carbs,
    fat_percent=fat,
    protein_grams=round(calories * protein / 100 / 4),
    carbs_grams=round(calories * carbs / 100 / 4),
    fat_grams=round(calories * fat / 100 / 9),
    calories_per_meal=round(calories / form.meals_per_day),
  )


def build_workout_prompt(form: WorkoutFormData) -> PlanPrompt:
  days = form.days_per_week
  day_keys = workout_day_keys(days)
  goal = _GOALS[form.fitness_goal]
  level = _LEVELS[form.experience_level]
  focus_areas = [_FOCUS_AREAS[area] for area in form.focus_areas]
  equipment = _EQUIPMENT[form.equipment]

  example_days = ",\n    ".join(
    f'"{key}": {{"focus": "Day {index + 1} focus area", "description": "Brief workout description", "exercises": [{{"name": "Exercise Name", "sets": 3, "reps": "8-12", "rest": "60 sec"}}], "notes": ["Tip 1", "Tip 2"]}}' for index, key in enumerate(day_keys)
  )

  user = f"""Create a {days}-day workout plan.

PARAMETERS:
- Goal: {goal}
- Level: {level}
- Days: {days} (MUST create exactly {days} workout days)
- Session: {form.session_length} minutes
- Focus: {", ".join(focus_areas)}
- Equipment: {equipment}

CRITICAL REQUIREMENTS:
1. You MUST create EXACTLY {days} workout days ({", ".join(day_keys)})
2. Each day MUST have 5-8 exercises appropriate for {form.session_length} minutes
3. Each exercise needs: name, sets (number), reps (string like "8-12"), rest (string like "60-90 sec")
4. Include 2-3 notes per day with tips
5. Make each day focus on different muscle groups for variety

Return ONLY valid JSON:
{{
  "summary": {{"goal": "{goal}", "level": "{level}", "daysPerWeek": {days}, "sessionLength": {form.session_length}, "focusAreas": {json.dumps(focus_areas)}, "equipment": "{equipment}"}},
  "overview": "Brief 2-3 sentence plan overview",
  "workouts": {{
    {example_days}
  }}
}}"""

  return PlanPrompt(system=WORKOUT_SYSTEM_PROMPT.format(days=days, day_keys=", ".join(day_keys)), user=user)


def build_meal_prompt(form: MealFormData) -> PlanPrompt:
  targets = macro_targets(form)
  goal = _GOALS[form.nutrition_goal]
  diet_type = _DIET_TYPES[form.diet_type]
  restrictions = _RESTRICTIONS[form.dietary_restrictions]
  cuisine = _CUISINES[form.cuisine_preference] if form.cuisine_preference else "Any"
  include_snacks = bool(form.include_snacks)

  user = f"""Create a 7-day meal plan with the following parameters:
- Nutrition Goal: {goal}
- Diet Type: {diet_type}
- Meals Per Day: {form.meals_per_day}
- Dietary Restrictions: {restrictions}
- Cuisine Preference: {cuisine}
- Include Snacks: {"Yes" if include_snacks else "No"}

CRITICAL CALORIE REQUIREMENTS (MUST FOLLOW EXACTLY):
- Total Daily Calories: EXACTLY {form.daily_calories} calories per day
- Each meal should have approximately {targets.calories_per_meal} calories
- The sum of all meals each day MUST equal {form.daily_calories} calories (allow +/-50 calories tolerance)

Macronutrient Targets (per day):
- Protein: {targets.protein_grams}g ({targets.protein_percent}%)
- Carbs: {targets.carbs_grams}g ({targets.carbs_percent}%)
- Fat: {targets.fat_grams}g ({targets.fat_percent}%)

CRITICAL VARIETY REQUIREMENTS:
- EACH DAY MUST HAVE COMPLETELY DIFFERENT MEALS
- Use different proteins and cooking methods each day

Return your response as a valid JSON object with EXACTLY the following structure:
{{
  "summary": {{"goal": "{goal}", "calories": {form.daily_calories}, "dietType": "{diet_type}", "mealsPerDay": {form.meals_per_day}, "restrictions": "{restrictions}", "cuisine": "{cuisine}", "includeSnacks": {json.dumps(include_snacks)}}},
  "overview": "string with overall plan description",
  "macros": {{"protein": {targets.protein_grams}, "carbs": {targets.carbs_grams}, "fat": {targets.fat_grams}}},
  "meals": {{
    "day1": [{{"name": "string", "cookingTime": "string", "isSnack": false, "foods": [{{"name": "string", "amount": "string", "protein": 0, "carbs": 0, "fat": 0, "calories": 0}}], "totals": {{"protein": 0, "carbs": 0, "fat": 0, "calories": 0}}, "notes": "string"}}],
    "day2": [], "day3": [], "day4": [], "day5": [], "day6": [], "day7": []
  }}
}}"""

  return PlanPrompt(system=MEAL_SYSTEM_PROMPT, user=user)
