"""Admissions billing service"""
