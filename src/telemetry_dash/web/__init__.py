"""JSON API consumed by the dashboard's rendering layer"""
