"""
Approval Kernel

Configurable multi-step approval routing for business documents:
- Versioned workflows with ordered steps, conditions and approver specs
- Consensus rules (any / all / percentage) and conditional routing
- Durable escalation deadlines swept by a periodic job
- Segregation-of-duties gate on role grants
- Full auditability via hash chain
"""

__version__ = "0.1.0"
