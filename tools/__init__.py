"""Application services for the symptom tracker."""
