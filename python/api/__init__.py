"""HTTP API for the sanctions watchlist service"""
