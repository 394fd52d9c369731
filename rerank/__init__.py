"""
ReRank SEO Monitor

Rank tracking and competitor analysis for Search Console properties:
1. Monitors article rankings from Google Search Console
2. Detects rank drops and queues email/Slack notifications
3. Compares articles against SERP competitors (structural + LLM diff)
4. Handles plans, usage limits and Stripe billing
"""

__version__ = "0.4.0"
