from pushgate.decision.driver import DecisionStatus, PushDecision, PushRequest, evaluate_push
