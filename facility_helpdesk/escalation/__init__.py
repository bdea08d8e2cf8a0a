"""
Helpdesk Escalation Module
===========================

Bounded Context for helpdesk SLA rules and tier escalation.

Responsibilities:
- Resolve (category, sub-category, issue, priority) to tiered SLA budgets
- Govern the ticket status lifecycle Open -> WIP -> Resolved
- Compute escalation deadlines and walk tickets up the support tiers
- Notify Slack on escalation
- Provide catalog and statistics endpoints over the rule table
"""

__version__ = "1.0.0"
