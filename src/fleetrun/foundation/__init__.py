"""Foundation layer: errors, results and configuration shared by every other package."""
