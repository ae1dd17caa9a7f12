from backoffice.app.tenant.model.plan import Plan, PlanLimit
from backoffice.app.tenant.model.tenant import Tenant, User
