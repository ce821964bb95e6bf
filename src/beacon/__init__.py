"""
Beacon Governance - consent-gated PHI access control and audit

Components:
- Audit Log (append-only PHI access, data change, security and session events)
- Consent Ledger (42 CFR Part 2 and AI processing consent lifecycle)
- Disclosure Control (third-party disclosure verification, re-disclosure notice)
- Sensitive-Category Access Control (SUD records, documented need)
- Query Engine (natural-language queries under the same authorization rules)
"""
__version__ = "0.1.0"
