"""Backend du checkout de la marketplace de prestataires de mariage."""
