"""
Nirman Works Tracker
Blueprint registry.

    health_bp          /api/v1/health/*
    work_proposal_bp   /api/v1/work-proposals/*
    reference_bp       /api/v1/admin/<kind>/*
"""
