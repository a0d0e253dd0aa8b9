"""Card wrapper over a caller-supplied PC/SC-style transport."""