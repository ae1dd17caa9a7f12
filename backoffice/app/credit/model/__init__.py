from backoffice.app.credit.model.credit import CreditPackage, CreditSetting, CreditTransaction, TenantCredit
