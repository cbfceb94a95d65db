# ==============================================================================
# YUBARTA - Núcleo de negociación de materiales reciclados
# ==============================================================================
# M1 Sourcing:    Requerimiento <- Oferta
# M2 Marketplace: Publicación   <- Oferta de compra
# ==============================================================================

__version__ = '1.0.0'
