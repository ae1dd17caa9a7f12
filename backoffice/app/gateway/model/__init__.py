from backoffice.app.gateway.model.payment_gateway import PaymentGatewaySetting
