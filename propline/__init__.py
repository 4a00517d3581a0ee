"""Propline: prop-line probabilities for NBA and EPL fixtures, served from a background-refreshed cache."""
