# Lazy imports to avoid dependency chains at startup
def __getattr__(name):
    if name in {"build_report", "resolve_approval", "match_rule", "breakpoints", "resolve_approver"}:
        from spendgate.services import approval_policy
        return getattr(approval_policy, name)
    elif name == "build_policy_report":
        from spendgate.services.policy_report import build_policy_report
        return build_policy_report
    elif name == "DirectoryClient":
        from spendgate.services.directory import DirectoryClient
        return DirectoryClient
    raise AttributeError(f"module 'spendgate.services' has no attribute '{name}'")
