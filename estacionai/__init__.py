"""EstacionAI: vagas, tarifas y libro de entradas/salidas para estacionamientos."""

__version__ = "0.1.0"
