# Glucose Forecast API
